"""
Nexus edge gateway service.
"""
