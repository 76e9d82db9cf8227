"""Analysis, scoring, and preference services."""
