"""
Approval Ledger: review decisions per document version. Document status is a
projection of the newest decision.
"""
