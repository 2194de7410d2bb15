"""
Services module for fan synchronization and orchestration
"""
