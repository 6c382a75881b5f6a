"""Shared helpers: logging, threads, local network"""
