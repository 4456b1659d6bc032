"""
Asset Cutout Service

Stages remote images into object storage and runs background-removal
jobs to completion.
"""
