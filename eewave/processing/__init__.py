"""Reconstruction pipeline stages and post-processing for OpenEEW channels."""
