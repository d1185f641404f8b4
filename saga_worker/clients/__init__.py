"""HTTP clients for the gameplay data and image generation providers."""
