"""Device position resolution with fallback locations."""
