"""
Doctor registration wizard.

This module provides:
- The fixed step order and the per-step validation rules
- The session manager owning the durable registration session
- The flexible navigation resolver
- The wizard controller and its HTTP routes
- The external collaborators (profile store, license registry, identity provider, code gateway)
"""
