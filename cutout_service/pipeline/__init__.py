"""
Cutout Pipeline

Three sequential stages per request:
1. Upload - stream a remote image into object storage (optional)
2. Submit - start the remote background-removal job
3. Poll - wait for the job to complete or fail
"""
