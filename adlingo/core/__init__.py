"""
Core translation engine
"""
