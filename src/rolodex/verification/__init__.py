"""Human verification queue and reviewer workflow."""
