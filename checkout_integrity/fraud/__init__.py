"""Real-time fraud risk scoring for checkout sessions."""
