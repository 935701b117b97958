"""Engine components"""
