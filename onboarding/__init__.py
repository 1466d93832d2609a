"""
Doctor registration session engine.

Tracks the multi-step onboarding wizard for doctors, persists partial
progress, and coordinates the email, phone and document verification
channels that gate the wizard's steps.
"""
