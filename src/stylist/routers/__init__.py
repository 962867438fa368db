"""HTTP routers for the stylist API."""
