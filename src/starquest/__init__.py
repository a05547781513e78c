""" Star Quest: narrative decision engine for a space RPG """

__version__ = "0.1.0"
