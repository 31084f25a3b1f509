"""
All the structures to describe the cluster objects and the connection data.

All the functions here are purely data-manipulative and computational.
No external calls or any i/o activities are done here.
"""
