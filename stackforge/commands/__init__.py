"""Stackforge CLI commands"""
