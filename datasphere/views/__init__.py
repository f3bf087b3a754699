"""
datasphere.views: View configuration table and render-type rules.
"""
