"""HTTP front end for the sensor relay"""
