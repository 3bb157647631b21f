"""ConsentIQ operator CLI."""
