"""Customer returns and refunds."""
