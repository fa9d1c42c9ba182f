#! /usr/bin/env python

# Standard library
import getpass
import json
import sys
# App modules
from txcasticket.couchdb_ticket_store import design_document
# External modules
from treq import content, json_content
from treq.client import HTTPClient
from twisted.internet.task import react
from twisted.web.client import Agent

def main():
    is_https = ""
    while is_https.strip().lower() not in ('y', 'n'):
        is_https = input("Use HTTPS [Yn]? ")
        if is_https.strip() == "":
            is_https = "y"
    is_https = (is_https.strip().lower() == "y")
    host = input("CouchDB Server: ")
    port = ""
    while True:
        port = input("CouchDB Port: ")
        try:
            port = int(port)
        except ValueError:
            continue
        break
    db = ""
    while db.strip() == "":
        db = input("Database Name: ")
    admin = ""
    while admin.strip() == "":
        admin = input("Admin User: ")
    passwd = ""
    confirm = None
    while passwd != confirm:
        passwd = getpass.getpass("Password: ")
        confirm = getpass.getpass("Confirm Password: ")
    print("Create ticket database")
    print("Server: %s:%d" % (host, port))
    print("Database: '%s'" % db)
    yesno = input("Continue [yN]? ")
    if yesno.strip().lower() != "y":
        sys.exit(1)
    if is_https:
        scheme = "https"
    else:
        scheme = "http"
    url = "%s://%s:%d/%s" % (scheme, host, port, db)

    # 201 - created, 412 - exists
    def check_created(resp):
        def report_error(resp_text):
            raise Exception("Could not create database.\n%s" % resp_text)
        if resp.code not in (201, 412):
            return content(resp).addCallback(report_error)
        return resp

    def create_design_doc(_, http):
        doc = json.dumps(design_document())
        return http.put(
            "%s/_design/views" % url, auth=(admin, passwd), data=doc.encode('utf-8'))

    # 201 - create ddoc, 409 - exists
    def report_status(resp):
        if resp.code == 409:
            print("Design document 'views' already exists.")
        elif resp.code != 201:
            print("Could not create design document 'views'.")
        return resp

    def log_error(err):
        print(err)
        return err

    print("URL => {0}".format(url))

    def perform_task(reactor):
        http = HTTPClient(Agent(reactor))
        d = http.put(url, auth=(admin, passwd))
        d.addCallback(check_created)
        d.addCallback(json_content)
        d.addCallback(create_design_doc, http)
        d.addCallback(report_status)
        d.addCallback(json_content)
        d.addErrback(log_error)
        return d

    react(perform_task)

if __name__ == "__main__":
    main()
