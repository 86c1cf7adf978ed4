"""Mount NFSv3 exports inside a Linux guest and re-export them over SMB."""

__version__ = '0.1.0'
