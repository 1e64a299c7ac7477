"""
CommCare App Forge - generate, validate, auto-repair and export .ccz packages
"""
