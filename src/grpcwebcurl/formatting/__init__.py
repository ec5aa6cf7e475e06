""" Rendering of decoded messages and descriptors for the terminal """
