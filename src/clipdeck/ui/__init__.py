"""
Terminal front end for recording and browsing clips.
"""
