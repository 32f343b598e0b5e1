"""
Lending Core

Peer-to-peer micro-lending engine: loan lifecycle, repayment allocation,
borrower credit scoring, risk flags and lender compliance. All money is
carried as integer minor units and every state change is audited.
"""

__version__ = "1.0.0"
