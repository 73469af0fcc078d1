"""SEO Hub backend package."""
