""" Saving and loading narrative state """
