"""Upstream HTTP clients"""
