"""Session transcript persistence."""
