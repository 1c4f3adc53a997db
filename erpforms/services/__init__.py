"""erpforms.services: Business logic; every commit in the project happens here."""
