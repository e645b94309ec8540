"""
Shared building blocks: configuration, errors, logging, commands, process manager.
"""
