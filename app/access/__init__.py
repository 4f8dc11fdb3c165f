"""Event access control: principals, share links, roles, capabilities and visibility."""
