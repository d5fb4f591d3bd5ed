"""Local PII detection and masking.

An ordered table of UK healthcare identifier patterns, a scanner that
masks matches with category placeholders, and review highlighting.
"""
