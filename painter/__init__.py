"""Painter: batch image generation for fashion shoots."""
