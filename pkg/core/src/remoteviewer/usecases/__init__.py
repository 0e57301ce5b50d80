"""
Application usecases.

CLI commands and HTTP routes call functions from here; nothing in this
package talks to a store library directly.
"""
