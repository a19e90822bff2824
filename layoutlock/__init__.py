"""
Layout-locked room photo editing service
"""
