"""URL shortener API with QR codes, accounts and rate limiting."""
