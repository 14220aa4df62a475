"""Client for the tax calculation and ITR generation service."""
