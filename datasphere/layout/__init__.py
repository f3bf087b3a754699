"""
datasphere.layout: Bubble placement and flow line geometry.
"""
