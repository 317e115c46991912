"""
Color-keyed background removal microservice package.

Exposes the model-free segmentation core (border sampling, edge-protected
region growing, mask feathering) plus the decode, session and FastAPI
layers that serve it.
"""
