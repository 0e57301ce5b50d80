"""
remote-viewer: scheduled and looping TV-style channels over a remote media library.
"""
