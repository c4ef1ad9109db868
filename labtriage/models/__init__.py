"""Canonical data models"""
