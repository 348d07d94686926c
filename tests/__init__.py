"""
Test Suite Initialization

kbstore test configuration.
"""
