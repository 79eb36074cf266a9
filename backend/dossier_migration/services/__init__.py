"""Pipeline services and business rules."""
