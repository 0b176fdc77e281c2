"""Business services for FreightConnect application."""
