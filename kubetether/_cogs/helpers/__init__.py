"""
General-purpose helpers not related to the sessions themselves
(neither to the tunnels nor to the streams nor to the structs),
which are used to prepare and control the runtime environment.

As a rule of thumb, helpers MUST be abstracted from the project
to such an extent that they could be extracted as reusable libraries.
"""
