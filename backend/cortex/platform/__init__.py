"""Platform services: error envelope, identity gate, identity provider client."""
