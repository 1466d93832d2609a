"""
Out-of-band verification channels for the doctor registration wizard.

This module provides:
- The cooldown policy shared by every channel
- A generic verification tracker (one instance per channel: email, phone, document)
"""
