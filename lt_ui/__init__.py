"""Command-line shell for the print load tester."""
