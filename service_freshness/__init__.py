"""
Dashboard data-freshness layer service package.
"""
